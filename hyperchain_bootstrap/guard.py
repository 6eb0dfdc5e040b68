"""Check-then-register guard.

Registering a token or a chain twice reverts, or worse, succeeds twice.
Before sending a registration we ask the chain whether it is already done.

This makes registrations safe to repeat across runs, even though the
deployment sequence as a whole is not idempotent.
"""

import logging
from typing import Callable

from hyperchain_bootstrap.errors import RegistrationQueryFailed

logger = logging.getLogger(__name__)


def ensure_registered(
    predicate_query: Callable[[], bool],
    register_action: Callable[[], object],
    description: str = "registration",
) -> bool:
    """Run ``register_action`` only if ``predicate_query`` says it is not done yet.

    Example:

    .. code-block:: python

        ensure_registered(
            lambda: l1.call(ContractQuery(bridgehub, "tokenIsRegistered", ("address",), (token,), ("bool",))),
            lambda: executor.execute(add_token_step, intent, context),
            description=f"token {token}",
        )

    :param predicate_query:
        Read-only on-chain query returning ``True`` when already registered.

    :param register_action:
        State changing action, called at most once.

    :param description:
        For log messages.

    :return:
        ``True`` if the action was run, ``False`` if it was already satisfied.

    :raise RegistrationQueryFailed:
        If the query fails. We do not fall back to "not registered".
    """
    try:
        satisfied = predicate_query()
    except Exception as e:
        raise RegistrationQueryFailed(f"Could not check {description}: {e}") from e

    if satisfied:
        logger.info("%s already in place, skipping", description)
        return False

    register_action()
    return True
