from __future__ import annotations

from typing import Iterable, List

from rulesync.schemas.rules import Rule, RuleGroup, RuleGroups


# PUBLIC_INTERFACE
def stamp_tenant_label(rules: Iterable[Rule], label: str, tenant_id: str) -> List[Rule]:
    """
    Return copies of `rules` whose `label` is set to `tenant_id`.

    Any value already present for `label` is overwritten. Rules without labels gain a mapping holding
    only the ownership label. The input rules are left untouched.
    """
    stamped: List[Rule] = []
    for rule in rules:
        labels = dict(rule.labels)
        labels[label] = tenant_id
        stamped.append(rule.model_copy(update={"labels": labels}))
    return stamped


# PUBLIC_INTERFACE
def stamp_rule_group(group: RuleGroup, label: str, tenant_id: str) -> RuleGroup:
    """Stamp the ownership label on every rule of a single group."""
    return group.model_copy(update={"rules": stamp_tenant_label(group.rules, label, tenant_id)})


# PUBLIC_INTERFACE
def stamp_rule_groups(groups: RuleGroups, label: str, tenant_id: str) -> RuleGroups:
    """Stamp the ownership label on every rule of every group."""
    return RuleGroups(groups=[stamp_rule_group(g, label, tenant_id) for g in groups.groups])
