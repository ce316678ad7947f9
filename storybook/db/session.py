from typing import List
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from storybook.db.models import PublicStory


def make_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def create_db_models(engine: Engine):
    SQLModel.metadata.create_all(engine)


class GalleryStore:
    """
    Document store for published stories.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def list_recent(self, limit: int = 20) -> List[PublicStory]:
        with Session(self.engine) as session:
            statement = select(PublicStory).order_by(PublicStory.created_at.desc(), PublicStory.id.desc()).limit(limit)
            return list(session.exec(statement).all())

    def add(self, title: str, author: str, cover_image_url: str, html_url: str) -> PublicStory:
        story = PublicStory(
            title=title,
            author=author,
            cover_image_url=cover_image_url,
            html_url=html_url,
        )
        with Session(self.engine) as session:
            session.add(story)
            session.commit()
            session.refresh(story)
        return story
