from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- GALLERY MODELS ---

class PublicStory(SQLModel, table=True):
    __tablename__ = "stories"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    author: str
    cover_image_url: str
    html_url: str
    created_at: datetime = Field(default_factory=utcnow, index=True)

    def to_api(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "author": self.author,
            "coverImageUrl": self.cover_image_url,
            "htmlUrl": self.html_url,
            "createdAt": self.created_at.isoformat(),
        }


# Request schema for POST /api/stories
class PublicStoryCreate(SQLModel):
    title: str = ""
    author: str = ""
    coverImageUrl: str = ""
    htmlUrl: str = ""

    def missing_fields(self) -> list:
        return [name for name, value in self.model_dump().items() if not value.strip()]
