from pathlib import Path

from linkwatch.scanning.domain.heuristics import (
    HeuristicPolicy,
    HeuristicScorer,
    de_leet,
    levenshtein,
    load_policy,
)
from linkwatch.scanning.domain.signals import Signal


def test_phishing_like_url_scores_above_warn_and_is_deterministic() -> None:
    scorer = HeuristicScorer()
    url = "http://go0gle-login.verify-account.tk/" + "x" * 200

    first = scorer.score(url)
    second = scorer.score(url)

    assert first == second
    assert {Signal.TYPOSQUAT, Signal.UNUSUAL_TLD, Signal.SUSPICIOUS_PATH, Signal.LONG_URL} <= set(first.signals)
    assert first.score > 25
    assert first.details["typosquat"]["brand"] == "google"


def test_clean_url_scores_zero() -> None:
    result = HeuristicScorer().score("https://en.wikipedia.org/wiki/Python")
    assert result.score == 0
    assert result.signals == ()


def test_unparseable_url_short_circuits() -> None:
    result = HeuristicScorer().score("http://")
    assert result.signals == (Signal.UNPARSEABLE_URL,)
    assert result.score == 25


def test_ip_host_skips_domain_checks() -> None:
    result = HeuristicScorer().score("http://203.0.113.7:8080/")
    assert Signal.IP_ADDRESS in result.signals
    assert Signal.UNUSUAL_PORT in result.signals
    assert Signal.UNUSUAL_TLD not in result.signals
    assert Signal.TYPOSQUAT not in result.signals
    assert result.score == 30


def test_typosquat_edit_distance_and_exact_brand() -> None:
    scorer = HeuristicScorer()
    assert Signal.TYPOSQUAT in scorer.score("https://paypa1.com/").signals
    assert Signal.TYPOSQUAT in scorer.score("https://dlscord.com/").signals
    assert Signal.TYPOSQUAT not in scorer.score("https://paypal.com/").signals
    assert Signal.TYPOSQUAT not in scorer.score("https://example.com/").signals


def test_structural_checks() -> None:
    scorer = HeuristicScorer()
    many = scorer.score("https://a.b.c.d.example.com/")
    assert Signal.MANY_SUBDOMAINS in many.signals

    obfuscated = scorer.score("https://cdn.example.com/" + "deadbeef" * 4)
    assert Signal.OBFUSCATED_PATH in obfuscated.signals

    at_signs = scorer.score("https://user@evil@example.com/")
    assert Signal.MULTIPLE_AT in at_signs.signals

    shortened = scorer.score("https://sho.rt/Ab12Cd")
    assert Signal.POTENTIAL_SHORTENER in shortened.signals


def test_homograph_hostname() -> None:
    result = HeuristicScorer().score("https://аpple-support.com/")
    assert Signal.HOMOGRAPH in result.signals


def test_policy_weights_are_configurable() -> None:
    policy = HeuristicPolicy.from_mapping({"weights": {"unusual_tld": 40, "bogus": 3}})
    result = HeuristicScorer(policy).score("https://example.zzz/")
    assert result.signals == (Signal.UNUSUAL_TLD,)
    assert result.score == 40


def test_load_policy_falls_back_to_defaults(tmp_path: Path) -> None:
    assert load_policy(tmp_path / "missing.yml") == HeuristicPolicy.default()

    broken = tmp_path / "broken.yml"
    broken.write_text("heuristics: [unclosed", encoding="utf-8")
    assert load_policy(broken) == HeuristicPolicy.default()

    custom = tmp_path / "policy.yml"
    custom.write_text("heuristics:\n  brands: [acme]\n  long_url_length: 50\n", encoding="utf-8")
    policy = load_policy(custom)
    assert policy.brands == ("acme",)
    assert policy.long_url_length == 50


def test_levenshtein_and_de_leet() -> None:
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0
    assert de_leet("P4YP41") == "paypai"
