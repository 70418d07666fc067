"""Tests for rendered content classification."""

import pytest

from dealsuite_sync.scraping.content_classifier import ContentClass, classify, inspect_content

from conftest import AUTHENTICATED_MARKDOWN, CHALLENGE_MARKDOWN, LOGIN_MARKDOWN


class TestClassify:
    """Tests for classify() and inspect_content()."""

    def test_authenticated_board_with_login_chrome(self):
        inspection = inspect_content(AUTHENTICATED_MARKDOWN)
        assert inspection.verdict == ContentClass.AUTHENTICATED
        assert "log in" in inspection.login_markers
        assert set(inspection.domain_markers) == {"ebitda", "revenue", "sector"}

    def test_login_page(self):
        inspection = inspect_content(LOGIN_MARKDOWN)
        assert inspection.verdict == ContentClass.LOGIN_WALL
        assert "forgot password" in inspection.login_markers
        assert not inspection.has_domain_content

    def test_challenge_page(self):
        assert classify(CHALLENGE_MARKDOWN) == ContentClass.CHALLENGE_PAGE

    def test_challenge_wins_over_domain_content(self):
        content = AUTHENTICATED_MARKDOWN + "\n<iframe src='https://geo.captcha-delivery.com/'>"
        assert classify(content) == ContentClass.CHALLENGE_PAGE

    @pytest.mark.parametrize("content", [None, "", "x" * 200])
    def test_empty_or_minimal_content_is_login_wall(self, content):
        assert classify(content) == ContentClass.LOGIN_WALL

    def test_subject_keyword_alone_is_not_enough(self):
        content = "Sign in to see what is wanted. " * 10
        inspection = inspect_content(content)
        assert inspection.verdict == ContentClass.LOGIN_WALL
        assert inspection.domain_markers == ()

    def test_field_names_without_subject_are_not_enough(self):
        content = "Log in to compare EBITDA and revenue by sector. " * 6
        assert classify(content) == ContentClass.LOGIN_WALL

    def test_long_content_without_login_vocabulary(self):
        content = "Company overview and market analysis. " * 10
        assert classify(content) == ContentClass.AUTHENTICATED

    def test_case_insensitive(self):
        assert classify(LOGIN_MARKDOWN.upper()) == ContentClass.LOGIN_WALL
        assert classify(AUTHENTICATED_MARKDOWN.upper()) == ContentClass.AUTHENTICATED

    def test_custom_minimum_length(self):
        assert classify("Wanted: EBITDA 1M") == ContentClass.LOGIN_WALL
        assert inspect_content("Wanted: EBITDA 1M", min_content_length=5).verdict == ContentClass.AUTHENTICATED
