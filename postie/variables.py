"""Environment variable substitution for request URLs."""

import logging

from .models import EnvironmentFile

logger = logging.getLogger(__name__)


def placeholder(key: str) -> str:
    return "{{" + key + "}}"


def substitute_variables(environment: EnvironmentFile, raw_url: str) -> str:
    """Replace ``{{key}}`` placeholders in a URL with environment values.

    Values are applied one after another in list order, each replacing every
    literal occurrence of its placeholder in the already substituted string.
    Disabled values are substituted as well. Placeholders with no matching
    key are left untouched.
    """
    if environment.values is None:
        logger.debug("environment %r has no values, url left as is", environment.name)
        return raw_url

    url = raw_url
    for value in environment.values:
        url = url.replace(placeholder(value.key), value.value)
    logger.debug("substituted url: %s", url)
    return url
