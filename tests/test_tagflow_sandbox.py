import pytest
from jsonschema.exceptions import SchemaError

from tagflow.tagflow_datatypes import ValueShapeError
from tagflow.tagflow_sandbox import ExpressionEvaluator, SchemaValidator, TemplateRenderer


@pytest.mark.asyncio
async def test_expression_sees_data_keys():
    evaluate = ExpressionEvaluator()
    assert await evaluate("len(items) * 2", {"items": [1, 2]}) == 4
    assert await evaluate("data[0]", ["x"]) == "x"
    assert await evaluate("sorted(data)", [3, 1]) == [1, 3]


@pytest.mark.asyncio
@pytest.mark.parametrize("expression", ["__import__('os')", "().__class__", "x._secret"])
async def test_expression_rejects_private_names(expression):
    with pytest.raises(ValueShapeError):
        await ExpressionEvaluator()(expression, {"x": 1})


@pytest.mark.asyncio
@pytest.mark.parametrize("expression", [
    "[[l.append((z.gi_frame.f_back.f_back.f_back.f_globals for z in l)), list(l[0])][1] for l in [[]]]",
    "x.gi_frame",
    "x.f_globals",
    "x.cr_frame",
    "x.tb_frame",
])
async def test_expression_cannot_reach_frames(expression):
    with pytest.raises(ValueShapeError, match="is not allowed"):
        await ExpressionEvaluator()(expression, {"x": 1})


@pytest.mark.asyncio
async def test_expression_has_no_lambdas():
    with pytest.raises(ValueShapeError):
        await ExpressionEvaluator()("(lambda: 1)()")
    assert await ExpressionEvaluator()("[v * 2 for v in data]", [1, 2]) == [2, 4]


@pytest.mark.asyncio
async def test_expression_has_no_unsafe_builtins():
    with pytest.raises(ValueShapeError):
        await ExpressionEvaluator()("open('f')")


@pytest.mark.asyncio
async def test_expression_syntax_error():
    with pytest.raises(ValueShapeError, match="Invalid expression"):
        await ExpressionEvaluator()("1 +")


@pytest.mark.asyncio
async def test_template_renderer():
    render = TemplateRenderer()
    assert await render("{{a}} & {{{b}}}", {"a": "<i>", "b": "<i>"}) == "&lt;i&gt; & <i>"
    assert await render("static", None) == "static"


@pytest.mark.asyncio
async def test_schema_validator():
    validate = SchemaValidator()
    assert await validate({"type": "integer", "minimum": 1}, 2) is True
    assert await validate({"type": "integer", "minimum": 1}, 0) is False
    with pytest.raises(SchemaError):
        await validate({"type": 5}, 1)
