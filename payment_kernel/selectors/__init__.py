"""Read-only query selectors for history and rule logs."""

from payment_kernel.selectors.history_selector import HistoryEntry, HistorySelector
from payment_kernel.selectors.rule_log_selector import RuleLogSelector, RuleLogView

__all__ = ["HistoryEntry", "HistorySelector", "RuleLogSelector", "RuleLogView"]
