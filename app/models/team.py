from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.database import Base


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    short_name: Mapped[str] = mapped_column(String(5))  # e.g., "MI", "CSK"

    # Relationships
    players: Mapped[list["Player"]] = relationship("Player", back_populates="team")

    def __repr__(self):
        return f"<Team {self.name} ({self.short_name})>"
