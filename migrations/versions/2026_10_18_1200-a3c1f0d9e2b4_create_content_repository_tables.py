"""create content repository tables

Revision ID: a3c1f0d9e2b4
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a3c1f0d9e2b4"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE contents (
            id text NOT NULL,
            doc jsonb NOT NULL,
            CONSTRAINT contents_pkey PRIMARY KEY (id)
        );
        CREATE INDEX contents_parent_path_idx ON contents ((doc->>'parent_path') text_pattern_ops);
        CREATE INDEX contents_parent_id_idx ON contents ((doc->>'parent_id'));

        CREATE TABLE content_languages (
            id text NOT NULL,
            doc jsonb NOT NULL,
            CONSTRAINT content_languages_pkey PRIMARY KEY (id)
        );
        CREATE INDEX content_languages_content_lang_idx
            ON content_languages ((doc->>'content_id'), (doc->>'language'));

        CREATE TABLE content_versions (
            id text NOT NULL,
            doc jsonb NOT NULL,
            CONSTRAINT content_versions_pkey PRIMARY KEY (id)
        );
        CREATE INDEX content_versions_content_lang_idx
            ON content_versions ((doc->>'content_id'), (doc->>'language'));
        """
    )


def downgrade() -> None:
    op.execute("""
        DROP TABLE IF EXISTS content_versions;
        DROP TABLE IF EXISTS content_languages;
        DROP TABLE IF EXISTS contents;
    """)
