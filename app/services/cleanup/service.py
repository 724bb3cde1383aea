from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from app.core.logging import log_context
from app.core.time import to_epoch_ms, utcnow
from app.services.errors import CleanupFailed
from app.store.base import Store

log = logging.getLogger(__name__)

POLICY_CASCADE = "cascade"
POLICY_PRESERVE = "preserve"

STAGE_READ = "read"
STAGE_REFERRALS = "referrals_batch"
STAGE_REFERENCES = "references_batch"
STAGE_PRIMARY = "primary_batch"


@dataclass(frozen=True)
class CleanupSummary:
    removed_orders: int = 0
    cleared_referrer_in_orders: int = 0
    removed_commissions: int = 0
    removed_cashbacks: int = 0
    cleared_special_assignments: int = 0
    removed_withdrawal_requests: int = 0
    removed_referrals: int = 0
    wrote_deleted_record: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CleanupPlan:
    """The write batches for one user, computed from a single read pass.

    Applied in order: other users' referral entries, then records that point
    at the user (orders, events, assignments, audit record), then the user's
    own records.
    """

    uid: str
    referrals_batch: dict[str, Any]
    references_batch: dict[str, Any]
    primary_batch: dict[str, Any]
    summary: CleanupSummary


def _nodes(value: Any) -> dict[str, Mapping[str, Any]]:
    if not isinstance(value, Mapping):
        return {}
    return {str(k): v for k, v in value.items() if isinstance(v, Mapping)}


def _email(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def plan_cleanup(
    uid: str,
    *,
    users: Any,
    orders: Any,
    commissions: Any,
    cashbacks: Any,
    special_packages: Any,
    withdrawal_requests: Any = None,
    policy: str = POLICY_CASCADE,
    now: datetime | None = None,
) -> CleanupPlan:
    users_map = _nodes(users)
    target = users_map.get(uid) or {}
    deleted_email = _email(target.get("email"))
    deleted_name = target.get("name") if isinstance(target.get("name"), str) else ""

    refs: dict[str, Any] = {}
    primary: dict[str, Any] = {
        f"users/{uid}": None,
        f"kycRequests/{uid}": None,
        f"withdrawalRequests/{uid}": None,
    }
    referrals: dict[str, Any] = {}
    counts = dict.fromkeys(
        (
            "removed_orders",
            "cleared_referrer_in_orders",
            "removed_commissions",
            "removed_cashbacks",
            "cleared_special_assignments",
            "removed_withdrawal_requests",
            "removed_referrals",
        ),
        0,
    )
    had_completed = False

    for oid, o in _nodes(orders).items():
        if str(o.get("userId")) == uid:
            refs[f"orders/{oid}"] = None
            counts["removed_orders"] += 1
            if o.get("status") == "Completed":
                had_completed = True
        elif str(o.get("referrerId")) == uid:
            refs[f"orders/{oid}/referrerId"] = None
            counts["cleared_referrer_in_orders"] += 1

    for node, key, counter in (
        (commissions, "commissions", "removed_commissions"),
        (cashbacks, "cashbacks", "removed_cashbacks"),
    ):
        for eid, ev in _nodes(node).items():
            if str(ev.get("referrerId")) == uid or str(ev.get("userId")) == uid:
                refs[f"{key}/{eid}"] = None
                counts[counter] += 1
                had_completed = True

    for spid, sp in _nodes(special_packages).items():
        assigned = sp.get("assignedUserIds")
        if isinstance(assigned, Mapping) and assigned.get(uid):
            refs[f"specialPackages/{spid}/assignedUserIds/{uid}"] = None
            counts["cleared_special_assignments"] += 1

    # pushed requests; the legacy uid-keyed one goes with the primary batch
    for rid, wr in _nodes(withdrawal_requests).items():
        if rid in ("_deleted", uid):
            continue
        if str(wr.get("userId")) == uid:
            refs[f"withdrawalRequests/{rid}"] = None
            counts["removed_withdrawal_requests"] += 1

    if policy == POLICY_CASCADE:
        for other_uid, u in users_map.items():
            if other_uid == uid:
                continue
            for rk, rec in _nodes(u.get("referrals")).items():
                by_email = bool(deleted_email) and _email(rec.get("email")) == deleted_email
                if rk == uid or by_email:
                    referrals[f"users/{other_uid}/referrals/{rk}"] = None
                    counts["removed_referrals"] += 1

    if had_completed:
        refs[f"withdrawalRequests/_deleted/{uid}"] = {
            "name": deleted_name or "",
            "email": deleted_email,
            "deletedAt": to_epoch_ms(now or utcnow()),
            "hadCompletedTransaction": True,
        }

    return CleanupPlan(
        uid=uid,
        referrals_batch=referrals,
        references_batch=refs,
        primary_batch=primary,
        summary=CleanupSummary(**counts, wrote_deleted_record=had_completed),
    )


class UserCleanupService:
    """Removes one user and every record that points at it.

    Writes go out as separate batches (see ``CleanupPlan``). A failed batch
    leaves the earlier ones applied; the error carries the stage reached.
    The identity record is deleted last and its failures are only logged.
    """

    def __init__(
        self,
        store: Store,
        identity,
        *,
        policy: str = POLICY_CASCADE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if policy not in (POLICY_CASCADE, POLICY_PRESERVE):
            raise ValueError(f"unknown referral cleanup policy {policy!r}")
        self._store = store
        self._identity = identity
        self._policy = policy
        self._clock = clock

    async def delete_user(self, uid: str) -> CleanupSummary:
        uid = (uid or "").strip()
        if not uid:
            raise ValueError("uid is required")

        with log_context(uid=uid):
            return await self._delete(uid)

    async def _delete(self, uid: str) -> CleanupSummary:
        log.info("user_cleanup_start uid=%s policy=%s", uid, self._policy)

        try:
            users = await self._store.get("users")
            orders, commissions, cashbacks, special_packages, withdrawal_requests = await asyncio.gather(
                self._store.get("orders"),
                self._store.get("commissions"),
                self._store.get("cashbacks"),
                self._store.get("specialPackages"),
                self._store.get("withdrawalRequests"),
            )
        except Exception as e:
            self._log_failed(uid, STAGE_READ)
            raise CleanupFailed(uid, STAGE_READ, e) from e

        plan = plan_cleanup(
            uid,
            users=users,
            orders=orders,
            commissions=commissions,
            cashbacks=cashbacks,
            special_packages=special_packages,
            withdrawal_requests=withdrawal_requests,
            policy=self._policy,
            now=self._clock(),
        )

        applied: list[str] = []
        for stage, batch in (
            (STAGE_REFERRALS, plan.referrals_batch),
            (STAGE_REFERENCES, plan.references_batch),
            (STAGE_PRIMARY, plan.primary_batch),
        ):
            if not batch:
                continue
            try:
                await self._store.update(batch)
            except Exception as e:
                self._log_failed(uid, stage, applied)
                raise CleanupFailed(uid, stage, e) from e
            applied.append(stage)

        try:
            await self._identity.delete_identity(uid)
        except Exception as e:
            log.warning("user_cleanup_identity_delete_failed uid=%s err=%s", uid, e)

        log.info("user_cleanup_done uid=%s summary=%s", uid, plan.summary.as_dict())
        return plan.summary

    @staticmethod
    def _log_failed(uid: str, stage: str, applied: list[str] | None = None) -> None:
        log.exception(
            "user_cleanup_failed uid=%s stage=%s applied=%s",
            uid,
            stage,
            applied or [],
            extra={"stage": stage},
        )
