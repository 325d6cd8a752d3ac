"""
Unit tests for association and identity metadata.
"""

import pytest

from conftest import Comment, Post, Rating, Summary, Tag
from revisionable.exceptions import ReconcileError
from revisionable.storage.mapping import (
    AssociationKind,
    column_keys,
    describe_association,
    find_subclass,
    has_association,
    identity_key,
    identity_of,
    instance_identity,
    normalize_identity,
    primary_key_keys,
    type_tag,
)
from revisionable.storage.models import RevisionRecord


class TestDescribeAssociation:
    """Tests for association kind detection."""

    def test_ordered_owned(self):
        info = describe_association(Post, "comments")

        assert info.kind is AssociationKind.ORDERED
        assert info.owns_children is True
        assert info.target is Comment

    def test_many_to_many_is_not_owned(self):
        info = describe_association(Post, "tags")

        assert info.kind is AssociationKind.MANY_TO_MANY
        assert info.owns_children is False
        assert info.target is Tag

    def test_singular_owned(self):
        info = describe_association(Post, "summary")

        assert info.kind is AssociationKind.SINGULAR
        assert info.owns_children is True
        assert info.target is Summary

    def test_many_to_one_is_not_owned(self):
        info = describe_association(Comment, "post")

        assert info.kind is AssociationKind.SINGULAR
        assert info.owns_children is False

    def test_nested(self):
        assert describe_association(Comment, "ratings").target is Rating

    def test_missing(self):
        with pytest.raises(ReconcileError, match="Post has no association named 'authors'"):
            describe_association(Post, "authors")

    def test_has_association(self):
        assert has_association(Post, "tags")
        assert not has_association(Post, "title")


class TestIdentity:
    """Tests for identity helpers."""

    def test_column_keys(self):
        assert column_keys(Tag) == ["id", "name"]

    def test_primary_key_keys(self):
        assert primary_key_keys(Post) == ["id"]
        assert primary_key_keys(RevisionRecord) == ["id"]

    def test_type_tag(self):
        assert type_tag(Post) == "Post"

    def test_identity_of_transient_is_none(self):
        assert identity_of(Post(id=4, title="New")) is None

    def test_identity_of_persistent(self, post):
        assert identity_of(post) == (1,)

    def test_identity_survives_delete(self, session, post):
        session.delete(post)
        session.commit()

        assert identity_of(post) == (1,)

    def test_instance_identity_of_transient(self):
        assert instance_identity(Post(id=4, title="New")) == (4,)
        assert instance_identity(Tag(name="x")) == (None,)

    def test_normalize_identity(self):
        assert normalize_identity(5) == (5,)
        assert normalize_identity((1, "a")) == (1, "a")
        assert normalize_identity([1, "a"]) == (1, "a")

    def test_identity_key(self):
        assert identity_key((5,)) == "5"
        assert identity_key((1, "a")) == '["1", "a"]'

    def test_find_subclass_falls_back(self):
        assert find_subclass(Post, "Post") is Post
        assert find_subclass(Post, "Renamed") is Post
