"""Folding of detected package changes into summary, product and account views."""

from __future__ import annotations

from typing import Iterable, Sequence

from package_changes.core.identifiers import record_sort_key
from package_changes.models.analytics import (
    AccountChangeSummary,
    AggregateResult,
    ChangeCounts,
    ChangeSummary,
    DeploymentChangeSummary,
    ProductChangeSummary,
)
from package_changes.models.domain import ChangeType, PackageChange

DEFAULT_RECENT_LIMIT = 20


def _split(changes: Iterable[PackageChange]) -> tuple[int, int]:
    upgrades = downgrades = 0
    for change in changes:
        if change.change_type == ChangeType.UPGRADE:
            upgrades += 1
        else:
            downgrades += 1
    return upgrades, downgrades


def _counts(changes: Sequence[PackageChange]) -> ChangeCounts:
    upgrades, downgrades = _split(changes)
    return ChangeCounts(upgrades=upgrades, downgrades=downgrades, total_changes=upgrades + downgrades)


def _newest(changes: Sequence[PackageChange]) -> PackageChange:
    return max(changes, key=lambda change: (record_sort_key(change.new_record_id), change.new_record_id))


def recent_order_key(change: PackageChange) -> tuple:
    return (-record_sort_key(change.new_record_id), change.product_code, change.deployment_id, change.new_record_id)


def aggregate_changes(changes: Iterable[PackageChange], recent_limit: int = DEFAULT_RECENT_LIMIT) -> AggregateResult:
    """Build every aggregate view from a flat change list.

    Hierarchy totals are summed bottom-up (product, deployment, account) so each
    level always equals the sum of its children.
    """

    changes = list(changes)
    upgrades, downgrades = _split(changes)
    summary = ChangeSummary(
        records_with_changes=len({change.new_record_id for change in changes}),
        total_changes=len(changes),
        upgrades=upgrades,
        downgrades=downgrades,
        accounts_affected=len({change.account_id for change in changes}),
        deployments_affected=len({change.deployment_id for change in changes}),
        products_changed=len({change.product_code for change in changes}),
    )
    recent = sorted(changes, key=recent_order_key)[: max(recent_limit, 0)]
    return AggregateResult(
        summary=summary,
        by_product=_by_product(changes),
        by_account=_by_account(changes),
        recent=recent,
    )


def _by_product(changes: list[PackageChange]) -> dict[str, ProductChangeSummary]:
    grouped: dict[str, list[PackageChange]] = {}
    for change in changes:
        grouped.setdefault(change.product_code, []).append(change)

    result: dict[str, ProductChangeSummary] = {}
    for product_code in sorted(grouped):
        entries = grouped[product_code]
        upgrades, downgrades = _split(entries)
        named = [entry for entry in entries if entry.product_name]
        result[product_code] = ProductChangeSummary(
            product_code=product_code,
            product_name=_newest(named).product_name if named else None,
            upgrades=upgrades,
            downgrades=downgrades,
            total_changes=upgrades + downgrades,
            records_with_changes=len({entry.new_record_id for entry in entries}),
            accounts=len({entry.account_id for entry in entries}),
        )
    return result


def _by_account(changes: list[PackageChange]) -> dict[str, AccountChangeSummary]:
    tree: dict[str, dict[str, dict[str, list[PackageChange]]]] = {}
    for change in changes:
        deployments = tree.setdefault(change.account_id, {})
        products = deployments.setdefault(change.deployment_id, {})
        products.setdefault(change.product_code, []).append(change)

    result: dict[str, AccountChangeSummary] = {}
    for account_id in sorted(tree):
        deployments: dict[str, DeploymentChangeSummary] = {}
        account_changes: list[PackageChange] = []
        for deployment_id in sorted(tree[account_id]):
            product_changes = tree[account_id][deployment_id]
            products = {code: _counts(product_changes[code]) for code in sorted(product_changes)}
            deployment_changes = [change for code in products for change in product_changes[code]]
            account_changes.extend(deployment_changes)
            tenants = [change for change in deployment_changes if change.tenant_name]
            upgrades = sum(counts.upgrades for counts in products.values())
            downgrades = sum(counts.downgrades for counts in products.values())
            deployments[deployment_id] = DeploymentChangeSummary(
                deployment_id=deployment_id,
                tenant_name=_newest(tenants).tenant_name if tenants else None,
                upgrades=upgrades,
                downgrades=downgrades,
                total_changes=upgrades + downgrades,
                records_with_changes=len({change.new_record_id for change in deployment_changes}),
                products=products,
            )
        upgrades = sum(node.upgrades for node in deployments.values())
        downgrades = sum(node.downgrades for node in deployments.values())
        result[account_id] = AccountChangeSummary(
            account_id=account_id,
            account_name=_newest(account_changes).account_name,
            upgrades=upgrades,
            downgrades=downgrades,
            total_changes=upgrades + downgrades,
            records_with_changes=len({change.new_record_id for change in account_changes}),
            products_changed=len({change.product_code for change in account_changes}),
            deployments=deployments,
        )
    return result
