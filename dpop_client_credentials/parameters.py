"""Assembly of the Token Endpoint request parameters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from attrs import frozen

if TYPE_CHECKING:
    from .identity import GrantRequest

Parameters = List[Tuple[str, str]]
"""An ordered, multi-valued set of request parameters."""

ConvertedParameters = Union[Sequence[Tuple[str, str]], Mapping[str, Union[str, Iterable[str]]]]

ParameterConverter = Callable[["GrantRequest"], Optional[ConvertedParameters]]
"""A callable that provides additional parameters for a `GrantRequest`, or `None`."""


def iter_parameters(params: ConvertedParameters) -> Iterable[tuple[str, str]]:
    """Iterate over (key, value) pairs from either a sequence of pairs or a mapping.

    Mapping values may be a single `str` or an iterable of `str`, for multi-valued keys.

    """
    if isinstance(params, Mapping):
        for key, value in params.items():
            if isinstance(value, str):
                yield key, value
            else:
                for v in value:
                    yield key, v
    else:
        for key, value in params:
            yield key, value


@frozen
class ParameterAssembler:
    """Assemble the form parameters of a `client_credentials` token request.

    Args:
        converter: a callable providing additional parameters, like client authentication
            parameters. It may return `None` if there is no additional parameter.

    """

    converter: ParameterConverter | None = None

    def assemble(self, grant_request: GrantRequest) -> Parameters:
        """Return the ordered parameters for `grant_request`.

        The `grant_type` always comes first, followed by `scope` if the identity has scopes,
        then the `extra_parameters` from the grant request, then the parameters from the converter.
        Later entries never replace earlier entries with the same key, they are added alongside.

        """
        parameters: Parameters = [("grant_type", grant_request.grant_type)]
        scope = grant_request.identity.scope
        if scope:
            parameters.append(("scope", scope))
        parameters.extend(iter_parameters(grant_request.extra_parameters))
        if self.converter is not None:
            converted = self.converter(grant_request)
            if converted is not None:
                parameters.extend(iter_parameters(converted))
        return parameters
