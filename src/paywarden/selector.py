"""Pick one payment requirement out of the alternatives a 402 offers."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .errors import NoSupportedRequirementError
from .models import EXACT_SCHEME, PaymentRequirement, SelectionHints
from .networks import get_network, network_to_chain_id

logger = logging.getLogger(__name__)


def _same_network(candidate: str, wanted: str) -> bool:
    if candidate == wanted:
        return True
    a = get_network(candidate)
    b = get_network(wanted)
    return a is not None and a == b


def select_requirement(
    accepts: Sequence[PaymentRequirement],
    hints: Optional[SelectionHints] = None,
    preferred_network: Optional[str] = None,
    preferred_asset: Optional[str] = None,
) -> PaymentRequirement:
    """
    Return the first requirement this wallet can pay.

    An in-range ``accept_index`` wins outright. Otherwise a candidate must use
    the exact scheme, sit on a known network and match every preference that
    was given. Hint fields take precedence over the ``preferred_*`` options.
    """
    hints = hints or SelectionHints()

    if hints.accept_index is not None and 0 <= hints.accept_index < len(accepts):
        return accepts[hints.accept_index]

    want_scheme = hints.scheme
    want_network = hints.network or preferred_network
    want_asset = (hints.asset or preferred_asset or "").lower() or None

    for requirement in accepts:
        if requirement.scheme != EXACT_SCHEME:
            continue
        if want_scheme is not None and requirement.scheme != want_scheme:
            continue
        if network_to_chain_id(requirement.network) is None:
            continue
        if want_network is not None and not _same_network(requirement.network, want_network):
            continue
        if want_asset is not None and requirement.asset.lower() != want_asset:
            continue
        return requirement

    logger.info("No supported requirement among %d offered", len(accepts))
    raise NoSupportedRequirementError(
        f"None of the {len(accepts)} offered payment requirement(s) is supported"
    )
