"""Resolution of strategy parameter values for a BuildRun."""

from __future__ import annotations

from buildforge.core.constants import BuildReason
from buildforge.core.exceptions import ParameterError
from buildforge.core.types import BuildStrategySpec, ParamValue


def resolve_params(
    strategy: BuildStrategySpec,
    build_values: list[ParamValue],
    run_values: list[ParamValue],
) -> list[ParamValue]:
    """Merge strategy defaults, Build values and BuildRun overrides.

    BuildRun values win over Build values, which win over strategy defaults.
    The result lists every declared parameter in declaration order.

    Raises:
        ParameterError: A value names an undeclared parameter, or a
            parameter without a default has no value.
    """
    declared = {param.name: param for param in strategy.parameters}
    values: dict[str, str] = {}
    for value in [*build_values, *run_values]:
        if value.name not in declared:
            raise ParameterError(
                BuildReason.UNDEFINED_PARAMETER,
                f"parameter {value.name!r} is not defined by the build strategy",
            )
        values[value.name] = value.value

    missing = [
        name for name, param in declared.items() if name not in values and param.default is None
    ]
    if missing:
        raise ParameterError(
            BuildReason.MISSING_PARAMETER_VALUES,
            f"missing values for parameters: {', '.join(missing)}",
        )

    return [
        ParamValue(name=name, value=values.get(name, param.default or ""))
        for name, param in declared.items()
    ]
