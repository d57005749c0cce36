"""
Predicate fragments for candidate retrieval.

Each function returns one SQLAlchemy boolean clause over the Contract
entity, so shapes are assembled from the same parts instead of hand-built
SQL strings. Subqueries that touch group_contracts use an alias so they
don't correlate with the topic join of the outer statement.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import ColumnElement, Float, and_, case, exists, literal, or_, select
from sqlalchemy.orm import aliased

from contract_feed.models import (
    Contract,
    Group,
    GroupContract,
    PrivateUser,
    UserContractView,
    UserDisinterest,
    UserFollow,
)
from contract_feed.ranking.interest_store import InterestProfile


def interest_weight(profile: InterestProfile) -> ColumnElement[float]:
    """The user's score for the topic a contract row was joined through."""
    if not profile:
        return literal(0.0, Float)
    return case(profile, value=GroupContract.group_id, else_=0.0)


def in_topics(profile: InterestProfile) -> ColumnElement[bool]:
    return GroupContract.group_id.in_(list(profile))


def is_open_and_public(now: datetime) -> ColumnElement[bool]:
    return and_(Contract.close_time > now, Contract.visibility == "public")


def not_disinterested(user_id: str) -> ColumnElement[bool]:
    return ~exists().where(
        UserDisinterest.user_id == user_id,
        UserDisinterest.contract_id == Contract.id,
    )


def contract_not_in(contract_ids: Iterable[str]) -> ColumnElement[bool]:
    return Contract.id.not_in(sorted(contract_ids))


def creator_not_in(user_ids: Iterable[str]) -> ColumnElement[bool]:
    return Contract.creator_id.not_in(sorted(user_ids))


def not_in_blocked_groups(slugs: Iterable[str]) -> ColumnElement[bool]:
    gc = aliased(GroupContract)
    return ~exists().where(
        gc.contract_id == Contract.id,
        Group.id == gc.group_id,
        Group.slug.in_(sorted(slugs)),
    )


def not_yet_viewed(user_id: str) -> ColumnElement[bool]:
    """No view of any kind recorded for this user."""
    return ~exists().where(
        UserContractView.user_id == user_id,
        UserContractView.contract_id == Contract.id,
        or_(
            UserContractView.last_card_view_ts.is_not(None),
            UserContractView.last_promoted_view_ts.is_not(None),
            UserContractView.last_page_view_ts.is_not(None),
        ),
    )


def followed_user_ids(user_id: str):
    return select(UserFollow.follow_id).where(UserFollow.user_id == user_id)


def by_followed_creators(user_id: str) -> ColumnElement[bool]:
    return Contract.creator_id.in_(followed_user_ids(user_id))


@dataclass(frozen=True)
class ExclusionSet:
    """Everything a user must never be shown, applied to every shape."""
    user_id: str
    blocked_user_ids: frozenset[str] = field(default_factory=frozenset)
    blocked_contract_ids: frozenset[str] = field(default_factory=frozenset)
    blocked_group_slugs: frozenset[str] = field(default_factory=frozenset)
    ignore_contract_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def for_user(
        cls,
        user_id: str,
        private_user: Optional[PrivateUser],
        ignore_contract_ids: Iterable[str] = (),
    ) -> "ExclusionSet":
        if private_user is None:
            return cls(user_id=user_id, ignore_contract_ids=frozenset(ignore_contract_ids))
        return cls(
            user_id=user_id,
            blocked_user_ids=frozenset(
                (private_user.blocked_user_ids or [])
                + (private_user.blocked_by_user_ids or [])
            ),
            blocked_contract_ids=frozenset(private_user.blocked_contract_ids or []),
            blocked_group_slugs=frozenset(private_user.blocked_group_slugs or []),
            ignore_contract_ids=frozenset(ignore_contract_ids),
        )

    def predicates(self) -> list[ColumnElement[bool]]:
        clauses = [not_disinterested(self.user_id)]
        excluded = self.ignore_contract_ids | self.blocked_contract_ids
        if excluded:
            clauses.append(contract_not_in(excluded))
        if self.blocked_user_ids:
            clauses.append(creator_not_in(self.blocked_user_ids))
        if self.blocked_group_slugs:
            clauses.append(not_in_blocked_groups(self.blocked_group_slugs))
        return clauses
