from app.scenario.matcher import first_match, match_when
from app.scenario.models import Branch, Predicate, Utterance


def test_otherwise_and_missing_predicate_always_match():
    assert match_when({"otherwise": True}, "") is True
    assert match_when(None, "anything") is True


def test_contains_any_is_case_insensitive_substring():
    assert match_when({"containsAny": ["P95", "latency"]}, "our p95 is 500ms") is True
    assert match_when({"containsAny": ["p99"]}, "our p95 is 500ms") is False


def test_contains_any_wins_over_regex_when_both_declared():
    when = {"containsAny": ["nope"], "regex": "p95"}
    assert match_when(when, "p95") is False


def test_regex_defaults_to_case_insensitive_search():
    assert match_when({"regex": "group\\s+by"}, "I would GROUP  BY order_id") is True
    assert match_when({"regex": "GROUP", "flags": ""}, "group by") is True
    assert match_when({"regex": "GROUP", "flags": "m"}, "group by") is False


def test_malformed_regex_is_a_non_match():
    predicate = Predicate.from_dict({"regex": "([unclosed"})
    assert predicate.error
    assert match_when(predicate, "([unclosed") is False


def test_empty_predicate_never_matches():
    assert match_when({}, "anything") is False


def test_first_match_is_order_deterministic():
    branches = [
        Branch(when=Predicate.from_dict({"containsAny": ["a"]}), say=[Utterance("x", "first")]),
        Branch(when=Predicate.from_dict({"containsAny": ["ab"]}), say=[Utterance("x", "second")]),
        Branch(when=Predicate.from_dict({"otherwise": True}), say=[Utterance("x", "fallback")]),
    ]
    for _ in range(3):
        assert first_match(branches, "abc").say[0].text == "first"
    assert first_match(branches, "zzz").say[0].text == "fallback"
    assert first_match(branches[:2], "zzz") is None
