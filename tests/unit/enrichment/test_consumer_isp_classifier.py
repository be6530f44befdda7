"""Tests for consumer ISP classification."""

from __future__ import annotations

import pytest

from ipenrichment.enrichment.classification import DEFAULT_CONSUMER_ISP_KEYWORDS, ConsumerIspClassifier


class TestConsumerIspClassifier:
    """Test keyword matching on ISP and organization names."""

    @pytest.mark.parametrize(
        "isp",
        [
            "Comcast Cable Communications",
            "VERIZON BUSINESS",
            "AT&T Services, Inc.",
            "Telstra Internet",
            "Vodafone GmbH",
            "Charter Communications",
        ],
    )
    def test_matches_consumer_isps_case_insensitively(self, isp: str) -> None:
        assert ConsumerIspClassifier().is_common_consumer_isp(isp, None) is True

    def test_matches_on_organization_alone(self) -> None:
        """Either name is enough.

        Given: A neutral ISP name and a consumer organization name
        When: Classified
        Then: The organization match wins
        """
        classifier = ConsumerIspClassifier()
        assert classifier.is_common_consumer_isp("Some Transit Ltd", "Spectrum Residential") is True

    def test_business_names_are_not_filtered(self) -> None:
        classifier = ConsumerIspClassifier()
        assert classifier.is_common_consumer_isp("Google LLC", "Google Public DNS") is False
        assert classifier.is_common_consumer_isp("Amazon.com, Inc.", "AWS EC2 (us-east-1)") is False

    def test_absent_names_do_not_match(self) -> None:
        classifier = ConsumerIspClassifier()
        assert classifier.is_common_consumer_isp(None, None) is False
        assert classifier.is_common_consumer_isp("", "") is False
        assert classifier.is_common_consumer_isp() is False

    def test_keywords_are_injectable(self) -> None:
        """A custom keyword set replaces the defaults.

        Given: A classifier configured only with "example"
        When: Classifying Comcast and an Example ISP
        Then: Only the Example ISP matches
        """
        classifier = ConsumerIspClassifier(["Example"])
        assert classifier.keywords == ("example",)
        assert classifier.is_common_consumer_isp("Comcast Cable", None) is False
        assert classifier.is_common_consumer_isp("Example Broadband", None) is True

    def test_regex_metacharacters_are_literal(self) -> None:
        classifier = ConsumerIspClassifier(["at&t", "a.b"])
        assert classifier.is_common_consumer_isp("AT&T Mobility") is True
        assert classifier.is_common_consumer_isp("axb networks") is False

    def test_empty_keyword_set_matches_nothing(self) -> None:
        classifier = ConsumerIspClassifier([])
        assert classifier.keywords == ()
        assert classifier.is_common_consumer_isp("Comcast") is False

    def test_duplicate_and_blank_keywords_are_dropped(self) -> None:
        classifier = ConsumerIspClassifier(["Cox", "cox", "  ", "bt"])
        assert classifier.keywords == ("cox", "bt")

    def test_callable_alias(self) -> None:
        classifier = ConsumerIspClassifier()
        assert classifier("Comcast", None) is True


def test_default_keywords_are_lowercase() -> None:
    assert all(keyword == keyword.lower() for keyword in DEFAULT_CONSUMER_ISP_KEYWORDS)
    assert "comcast" in DEFAULT_CONSUMER_ISP_KEYWORDS
