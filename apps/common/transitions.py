import logging

from apps.common.exceptions import InvalidTransition

logger = logging.getLogger(__name__)


def advance(table, current, event, label="record"):
    """Return the state ``event`` leads to from ``current``.

    ``table`` maps ``(state, event)`` pairs to the next state; any pair it does
    not list raises ``InvalidTransition``.
    """
    try:
        return table[(current, event)]
    except KeyError:
        logger.warning("Refused %s on %s in state %s", event, label, current)
        raise InvalidTransition(f"Cannot {event} {label} while it is {current}.") from None


def allowed_events(table, current):
    return sorted(event for state, event in table if state == current)
