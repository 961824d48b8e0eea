"""Built-in safety rules applied to every proposed action.

Custom rules supplied through ``GovernanceConfig.custom_rules`` are evaluated
before these defaults, so a custom ``allow`` rule can relax a default ``deny``.
"""

from __future__ import annotations

from typing import List

from .models import RuleCategory, RuleType, SafetyRule


def _rule(rule_id: str, rule_type: RuleType, pattern: str, description: str, category: RuleCategory) -> SafetyRule:
    return SafetyRule(id=rule_id, type=rule_type, pattern=pattern, description=description, category=category)


DEFAULT_RULES: List[SafetyRule] = [
    # File operations
    _rule("deny-system-files", RuleType.deny, "/etc/**", "System configuration files are off-limits", RuleCategory.file),
    _rule("deny-root-files", RuleType.deny, "/root/**", "Root user files are off-limits", RuleCategory.file),
    _rule("deny-env-files", RuleType.deny, "**/.env*", "Environment files require manual editing", RuleCategory.file),
    _rule("deny-ssh-keys", RuleType.deny, "**/.ssh/**", "SSH keys are off-limits", RuleCategory.file),
    _rule(
        "deny-git-internal",
        RuleType.deny,
        "**/.git/**",
        "Git internal files should not be modified directly",
        RuleCategory.file,
    ),
    _rule("confirm-delete", RuleType.confirm, "delete:*", "File deletion requires confirmation", RuleCategory.file),
    _rule(
        "confirm-config-edit",
        RuleType.confirm,
        "edit:**/config.*",
        "Configuration file changes require confirmation",
        RuleCategory.file,
    ),
    # Terminal operations
    _rule("deny-sudo", RuleType.deny, "sudo *", "Sudo commands are not allowed", RuleCategory.terminal),
    _rule("deny-su", RuleType.deny, "su *", "User switching is not allowed", RuleCategory.terminal),
    _rule("deny-rm-rf", RuleType.deny, "rm -rf *", "Recursive force delete is not allowed", RuleCategory.terminal),
    _rule("deny-rm-rf-root", RuleType.deny, "rm -rf /", "Deleting root is absolutely forbidden", RuleCategory.terminal),
    _rule(
        "deny-chmod-777", RuleType.deny, "chmod 777 *", "World-writable permissions are not allowed", RuleCategory.terminal
    ),
    _rule("deny-curl-pipe-bash", RuleType.deny, "curl * | bash", "Piping curl to bash is not allowed", RuleCategory.terminal),
    _rule("deny-wget-pipe-bash", RuleType.deny, "wget * | bash", "Piping wget to bash is not allowed", RuleCategory.terminal),
    _rule("confirm-npm-install", RuleType.confirm, "npm install *", "Package installation requires confirmation", RuleCategory.terminal),
    _rule("confirm-pnpm-add", RuleType.confirm, "pnpm add *", "Package installation requires confirmation", RuleCategory.terminal),
    _rule("confirm-yarn-add", RuleType.confirm, "yarn add *", "Package installation requires confirmation", RuleCategory.terminal),
    _rule("confirm-pip-install", RuleType.confirm, "pip install *", "Package installation requires confirmation", RuleCategory.terminal),
    _rule("confirm-git-push", RuleType.confirm, "git push *", "Git push requires confirmation", RuleCategory.terminal),
    _rule("confirm-git-force", RuleType.confirm, "git * --force*", "Force operations require confirmation", RuleCategory.terminal),
    # Network operations
    _rule("confirm-external-fetch", RuleType.confirm, "fetch:http*", "External API calls require confirmation", RuleCategory.network),
    _rule("deny-localhost-admin", RuleType.deny, "fetch:*localhost*/admin*", "Admin endpoints are off-limits", RuleCategory.network),
    # System operations
    _rule("deny-shutdown", RuleType.deny, "shutdown *", "System shutdown is not allowed", RuleCategory.system),
    _rule("deny-reboot", RuleType.deny, "reboot *", "System reboot is not allowed", RuleCategory.system),
    _rule("deny-kill-all", RuleType.deny, "killall *", "Killing all processes is not allowed", RuleCategory.system),
]


def get_default_rules() -> List[SafetyRule]:
    return list(DEFAULT_RULES)


def get_rules_by_category(category: RuleCategory) -> List[SafetyRule]:
    return [rule for rule in DEFAULT_RULES if rule.category == category]
