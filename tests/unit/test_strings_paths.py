"""Tests for identifier and path conversions."""

from __future__ import annotations

import pytest

from duck_api.core.paths import convert_to_dot, convert_to_path
from duck_api.core.strings import kebab_case, split_words, title_case


class TestKebabCase:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("doThing", "do-thing"),
            ("geo_point", "geo-point"),
            ("_id", "id"),
            ("findPapo", "find-papo"),
            ("XMLHttpRequest", "xml-http-request"),
            ("already-kebab", "already-kebab"),
            ("user2fa", "user-2-fa"),
        ],
    )
    def test_kebab_case(self, name: str, expected: str) -> None:
        assert kebab_case(name) == expected

    def test_split_words_drops_separators(self) -> None:
        assert split_words("a_b-c d.e") == ["a", "b", "c", "d", "e"]

    def test_title_case(self) -> None:
        assert title_case("user") == "User"
        assert title_case("user-profile") == "User Profile"


class TestConvertToPath:
    @pytest.mark.parametrize(
        ("dir_path", "expected"),
        [
            ("users/_id.py", "users/:id"),
            ("/blogPosts/index.py", "blog-posts"),
            ("sandy/index.js", "sandy"),
            ("user.json", "user"),
            ("/users/_postId/comments/", "users/:post-id/comments"),
            ("index.py", ""),
        ],
    )
    def test_convert_to_path(self, dir_path: str, expected: str) -> None:
        assert convert_to_path(dir_path) == expected

    def test_only_one_param_marker(self) -> None:
        assert convert_to_path("__id") == ":id"


class TestConvertToDot:
    @pytest.mark.parametrize(
        ("dir_path", "expected"),
        [
            ("users/_id.py", "users._id"),
            ("sandy/index.py", "sandy"),
            ("blogPosts/__draft.py", "blog-posts.__draft"),
            ("user.py", "user"),
        ],
    )
    def test_convert_to_dot(self, dir_path: str, expected: str) -> None:
        assert convert_to_dot(dir_path) == expected

    def test_dot_then_path_round_trip(self) -> None:
        dotted = convert_to_dot("users/_userId/avatar.py")
        assert dotted == "users._user-id.avatar"
        assert "/".join(convert_to_path(part) for part in dotted.split(".")) == (
            "users/:user-id/avatar"
        )
