"""
Example usage of revision history for SQLAlchemy entities.

Demonstrates registering a model, guarded edits, listing and restoring
revisions, and the trash.
"""

from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from revisionable.config import config
from revisionable.logging import initialize_logging_from_config
from revisionable.revisions import RevisionManager
from revisionable.storage import RevisionDatabase


class Base(DeclarativeBase):
    pass


class Page(Base):
    __tablename__ = "pages"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(sa.String(200))
    body: Mapped[str] = mapped_column(sa.Text, default="")

    sections: Mapped[List["Section"]] = relationship(
        cascade="all, delete-orphan", order_by="Section.id"
    )


class Section(Base):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(primary_key=True)
    page_id: Mapped[int] = mapped_column(sa.ForeignKey("pages.id"))
    heading: Mapped[str] = mapped_column(sa.String(200))


def main():
    initialize_logging_from_config(config.logging)

    # Initialize database
    print("Initializing revision database...")
    db = RevisionDatabase("sqlite:///revision_example.db")
    db.create_tables(Base.metadata)

    manager = RevisionManager(db)
    manager.register(
        Page,
        limit=10,
        associations=["sections"],
        keep_trash=True,
        label=lambda page: page.title,
    )

    with db.session() as session:
        # Create a page
        print("\n1. Creating a page...")
        page = Page(id=1, title="Getting started", body="Install the package.")
        page.sections.append(Section(heading="Installation"))
        session.add(page)
        session.commit()

        # Edit it twice
        print("\n2. Editing the page...")
        manager.with_revision(page, lambda: setattr(page, "title", "Quick start"))
        session.commit()

        def add_section():
            page.sections.append(Section(heading="Configuration"))

        outcome = manager.with_revision(page, add_section)
        session.commit()
        print(f"  Recorded revision {outcome.revision.revision}")

        # List revisions
        print("\n3. Revision history:")
        for record in manager.list_revisions(Page, page.id):
            print(f"  #{record.revision} {record.label!r} at {record.created_at:%H:%M:%S}")

        # Preview and restore
        print("\n4. Restoring revision 1...")
        preview = manager.restore_revision(Page, page.id, 1)
        print(f"  Revision 1 title: {preview.title}")
        print(f"  Revision 1 sections: {[s.heading for s in preview.sections]}")

        manager.restore_revision_and_save(Page, page.id, 1)
        session.expire_all()
        page = session.get(Page, 1)
        print(f"  Live title now: {page.title}")

        # Delete into the trash and bring it back
        print("\n5. Deleting and restoring from trash...")
        manager.delete_with_revision(page)
        session.commit()
        last = manager.get_last_revision(Page, 1)
        print(f"  Last revision #{last.revision} trashed: {last.trash}")

        page = manager.restore_last_revision_and_save(Page, 1)
        print(f"  Restored page: {page.title}")

    # Sweep old trash
    print("\n6. Emptying trash older than 30 days...")
    deleted = manager.empty_trash(Page)
    print(f"  Deleted {deleted} trashed revisions")

    db.close()
    print("\nDone!")


if __name__ == "__main__":
    main()
