from pickforme.agents.preference_matcher import (
    PREFERENCE_RULES,
    PreferenceRule,
    build_context,
    extract_preferences,
    match_message,
    update_profile,
)
from pickforme.schemas import PreferenceProfile


def test_single_message_extracts_several_fields():
    found = match_message("We'd love some cheap sushi for 4 people, vegetarian please")

    assert found["cuisines"] == ["japanese"]
    assert found["price_band"] == "$"
    assert found["party_size"] == 4
    assert found["dietary_restrictions"] == ["vegetarian"]


def test_list_fields_collect_every_match():
    found = match_message("Either tacos or a curry place works")

    assert found["cuisines"] == ["mexican", "indian"]


def test_out_of_range_party_size_is_dropped():
    assert "party_size" not in match_message("a table for 40 people")


def test_later_user_messages_override_earlier_ones():
    messages = [
        {"role": "user", "content": "Somewhere fancy tonight"},
        {"role": "assistant", "content": "How about something cheap?"},
        {"role": "user", "content": "Actually let's keep it affordable, party of 3"},
    ]

    extracted = extract_preferences(messages)

    assert extracted["price_band"] == "$"
    assert extracted["party_size"] == 3


def test_assistant_turns_are_ignored():
    extracted = extract_preferences([{"role": "assistant", "content": "Do you like thai food?"}])

    assert extracted == {}


def test_custom_rules_extend_without_touching_defaults():
    rules = [*PREFERENCE_RULES, PreferenceRule(r"\brooftop\b", "atmosphere", "rooftop")]

    assert match_message("a rooftop spot", rules)["atmosphere"] == "rooftop"
    assert "atmosphere" not in match_message("a rooftop spot")


def test_update_profile_merges_into_existing_preferences():
    profile = PreferenceProfile(cuisines=["italian"], dietary_restrictions=["halal"], party_size=2)

    updated = update_profile(profile, [{"role": "user", "content": "Vegan options for 5 people"}])

    assert updated.cuisines == ["italian"]
    assert updated.dietary_restrictions == ["halal", "vegan"]
    assert updated.party_size == 5
    assert profile.party_size == 2


def test_build_context_lists_stated_fields():
    context = build_context(
        [{"role": "user", "content": "I want pizza"}],
        "nothing too expensive",
        prior_recommendations=["r1"],
    )

    assert context.stage == "gathering_preferences"
    assert context.last_user_query == "nothing too expensive"
    assert context.explicit_fields == ["cuisines", "price_band"]
    assert context.prior_recommendations == ["r1"]
