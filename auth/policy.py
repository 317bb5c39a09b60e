"""
auth/policy.py -- Per-resource access policy evaluation.

Four independent checks, combined by the engine:

  check_ip             block list > explicit allow > default allow when no
                       allow list is configured. Malformed entries are
                       logged and skipped, never treated as a match.
  bypassed             allowed_uri_pattern is a regex; a match means the
                       request does not need authentication. A broken
                       regex fails safe (authentication required).
  resource_allowed     OAuth identities are checked by email against the
                       policy's OAuth whitelist, everyone else by username
                       against the user whitelist.
  oauth_group_allowed  Only enforced for the generic OAuth provider, which is
                       the only one whose group claim is trusted. OR match.

Empty whitelists never restrict.
"""

from __future__ import annotations

import logging
import re

from auth.matchers import check_whitelist, filter_ip
from auth.models import IPPolicy, RequestIdentity, ResourcePolicy

logger = logging.getLogger("portcullis.auth.policy")

GENERIC_PROVIDER = "generic"


class AccessPolicyEvaluator:
    """Stateless evaluator for ResourcePolicy checks.

    oauth_whitelist is the process-wide email whitelist applied at OAuth
    login time (see email_whitelisted); per-resource whitelists live in the
    ResourcePolicy handed to each call.
    """

    def __init__(self, oauth_whitelist: str = "") -> None:
        self.oauth_whitelist = oauth_whitelist

    def check_ip(self, client_ip: str, policy: IPPolicy) -> bool:
        for blocked in policy.block:
            try:
                matched = filter_ip(blocked, client_ip)
            except ValueError as exc:
                logger.warning("Invalid IP/CIDR %r in block list: %s", blocked, exc)
                continue
            if matched:
                logger.warning("IP %s is in block list (%s), denying access", client_ip, blocked)
                return False

        for allowed in policy.allow:
            try:
                matched = filter_ip(allowed, client_ip)
            except ValueError as exc:
                logger.warning("Invalid IP/CIDR %r in allow list: %s", allowed, exc)
                continue
            if matched:
                logger.debug("IP %s is in allow list (%s), allowing access", client_ip, allowed)
                return True

        if policy.allow:
            logger.warning("IP %s not in allow list, denying access", client_ip)
            return False

        logger.debug("IP %s not in allow or block list, allowing by default", client_ip)
        return True

    def bypassed(self, uri: str, pattern: str) -> tuple[bool, re.error | None]:
        """Return (bypass, error). bypass=True means no authentication needed."""
        if not pattern:
            return False, None
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            logger.warning("Invalid allowed-URI regex %r: %s", pattern, exc)
            return False, exc
        return regex.search(uri) is not None, None

    def resource_allowed(self, identity: RequestIdentity, policy: ResourcePolicy) -> bool:
        if identity.is_oauth:
            logger.debug("Checking OAuth email whitelist")
            return check_whitelist(policy.oauth.email_whitelist, identity.email)
        logger.debug("Checking user whitelist")
        return check_whitelist(policy.user_whitelist, identity.username)

    def oauth_group_allowed(self, identity: RequestIdentity, policy: ResourcePolicy) -> bool:
        if not policy.oauth.required_groups:
            return True

        if identity.provider != GENERIC_PROVIDER:
            logger.debug("Provider %r is not %r, skipping group check", identity.provider, GENERIC_PROVIDER)
            return True

        for group in identity.oauth_groups.split(","):
            if group and check_whitelist(policy.oauth.required_groups, group):
                logger.debug("Group %r is in required groups", group)
                return True

        logger.debug("No groups of %r matched required groups", identity.username)
        return False

    def email_whitelisted(self, email: str) -> bool:
        return check_whitelist(self.oauth_whitelist, email)
