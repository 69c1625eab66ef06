import pytest

from salesvoice.core.scenario import (
    FEEDBACK_CRITERIA,
    QUESTIONS_PER_SESSION,
    BusinessPersona,
    ConsumerPersona,
    Difficulty,
    ScenarioConfig,
    build_script,
    default_scenario,
    parse_scenario,
)
from salesvoice.errors import ConfigurationError


def _business_mapping(**overrides):
    data = {
        "persona": {
            "buyer_type": "business",
            "job_title": "Head of Procurement",
            "company_name": "Northwind Logistics",
            "company_size": "500 employees",
            "priorities": ["cost", "reliability"],
        },
        "product": "fleet telematics software",
        "industry": "logistics",
        "difficulty": "hard",
    }
    data.update(overrides)
    return data


def test_default_scenario_script_describes_furniture_buyer():
    instruction, seed = build_script(default_scenario())

    assert seed == "Start by trying to sell some high-end wooden furniture"
    assert "30-year-old woman" in instruction
    assert "wealthy, style-conscious" in instruction
    assert "high-end wooden furniture" in instruction
    assert "luxury home furnishings" in instruction
    assert "BUYER (consumer)" in instruction
    assert f"TOTAL of {QUESTIONS_PER_SESSION} questions" in instruction
    assert "ONE question per message" in instruction
    assert "SWITCH OUT OF CHARACTER" in instruction
    for criterion in FEEDBACK_CRITERIA:
        assert criterion in instruction


def test_business_persona_from_mapping():
    instruction, seed = build_script(_business_mapping())

    assert seed == "Start by trying to sell some fleet telematics software"
    assert "business buyer" in instruction
    assert "Head of Procurement at Northwind Logistics (500 employees)" in instruction
    assert "cost, reliability" in instruction
    assert "logistics industry" in instruction
    assert "Difficulty: hard" in instruction
    assert "highly skeptical" in instruction


def test_build_script_is_deterministic():
    config = _business_mapping()
    assert build_script(config) == build_script(config)
    assert build_script(parse_scenario(config)) == build_script(config)


def test_focus_topics_replace_default_topics():
    scenario = ScenarioConfig(
        persona=ConsumerPersona(age=45, occupation="architect"),
        product="smart thermostats",
        industry="home automation",
        difficulty=Difficulty.EASY,
        focus_topics=("energy savings", "installation"),
    )
    instruction, _ = build_script(scenario)

    assert "energy savings, installation" in instruction
    assert "working as architect" in instruction
    assert "open to being convinced" in instruction


@pytest.mark.parametrize(
    "overrides",
    [
        {"product": ""},
        {"industry": "   "},
        {"difficulty": "impossible"},
        {"persona": {"buyer_type": "alien"}},
        {"persona": {"buyer_type": "consumer", "age": 7}},
        {"persona": {"buyer_type": "business", "job_title": " "}},
        {"unexpected": True},
    ],
)
def test_invalid_scenarios_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        build_script(_business_mapping(**overrides))


def test_missing_required_field_is_reported():
    data = _business_mapping()
    del data["product"]
    with pytest.raises(ConfigurationError) as excinfo:
        build_script(data)
    assert "product" in str(excinfo.value)


def test_non_mapping_scenario_rejected():
    with pytest.raises(ConfigurationError):
        parse_scenario(["not", "a", "mapping"])
    with pytest.raises(ConfigurationError):
        parse_scenario(None)


def test_scenario_is_immutable():
    scenario = default_scenario()
    with pytest.raises(Exception):
        scenario.product = "something else"


def test_persona_union_discriminates_on_buyer_type():
    scenario = parse_scenario(_business_mapping())
    assert isinstance(scenario.persona, BusinessPersona)
    assert isinstance(default_scenario().persona, ConsumerPersona)
