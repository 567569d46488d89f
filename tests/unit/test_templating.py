from convoflow.templating import has_placeholders, render


def test_render_substitutes_known_variables():
    assert render("Hi {{name}}, you are {{age}}", {"name": "Ana", "age": "17"}) == "Hi Ana, you are 17"


def test_render_keeps_unknown_and_empty_placeholders():
    assert render("Hi {{name}} {{city}}", {"name": ""}) == "Hi {{name}} {{city}}"


def test_has_placeholders():
    assert has_placeholders("{{x}}")
    assert not has_placeholders("plain text")
