"""Category rule domain service."""

import re
from typing import Optional

from bankimport.database.base import Database
from bankimport.domain.categorisation import parse_amount_range
from bankimport.domain.entities import CategoryRule, RuleType
from bankimport.domain.errors import NotFoundError, ValidationError


class RuleService:
    """Service for managing category rules."""

    def __init__(self, db: Database):
        """Initialize rule service.

        Args:
            db: Database instance
        """
        self.db = db

    def create_rule(
        self,
        user_id: Optional[int],
        rule_type: RuleType | str,
        pattern: str,
        category_level1: str,
        category_level2: Optional[str] = None,
        subcategory: Optional[str] = None,
        is_regex: bool = False,
        case_sensitive: bool = False,
        priority: int = 0,
        link_property_id: Optional[int] = None,
        link_loan_id: Optional[int] = None,
        link_expense_id: Optional[int] = None,
    ) -> int:
        """Create a category rule.

        Args:
            user_id: Owner, or None for a global rule
            rule_type: MERCHANT, KEYWORD, MCC, BPAY or AMOUNT_RANGE
            pattern: Text, regex or ``MIN-MAX`` range depending on type
            category_level1: Top level category
            category_level2: Optional second level category
            subcategory: Optional subcategory
            is_regex: Treat the pattern as a regular expression
            case_sensitive: Match case exactly
            priority: Higher priorities are evaluated first
            link_property_id: Property to link matching transactions to
            link_loan_id: Loan to link matching transactions to
            link_expense_id: Expense record to link matching transactions to

        Returns:
            Rule ID

        Raises:
            ValidationError: If the type, pattern or category is invalid
        """
        try:
            if not isinstance(rule_type, RuleType):
                rule_type = RuleType(str(rule_type).upper())
        except ValueError:
            valid = ", ".join(t.value for t in RuleType)
            raise ValidationError(f"Invalid rule type '{rule_type}'. Must be one of: {valid}")

        if not pattern or not pattern.strip():
            raise ValidationError("Rule pattern cannot be empty")
        if not category_level1 or not category_level1.strip():
            raise ValidationError("Rule category cannot be empty")

        if is_regex:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValidationError(f"Invalid regular expression '{pattern}': {e}")
        elif rule_type == RuleType.AMOUNT_RANGE and parse_amount_range(pattern) is None:
            raise ValidationError(f"Invalid amount range '{pattern}'. Use MIN-MAX, MIN- or -MAX")

        rule = CategoryRule(
            id=None,
            user_id=user_id,
            rule_type=rule_type,
            pattern=pattern,
            category_level1=category_level1,
            category_level2=category_level2,
            subcategory=subcategory,
            is_regex=is_regex,
            case_sensitive=case_sensitive,
            link_property_id=link_property_id,
            link_loan_id=link_loan_id,
            link_expense_id=link_expense_id,
            priority=priority,
        )
        return self.db.create_rule(rule)

    def list_rules(self, user_id: int) -> list[CategoryRule]:
        """List the user's rules and global rules in evaluation order."""
        return self.db.list_rules(user_id)

    def set_active(self, user_id: int, rule_id: int, active: bool) -> None:
        """Enable or disable one of the user's own rules.

        Raises:
            NotFoundError: If the rule does not exist for this user
            ValidationError: If the rule is global
        """
        rule = next((r for r in self.db.list_rules(user_id) if r.id == rule_id), None)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        if rule.user_id is None:
            raise ValidationError("Global rules cannot be changed per user")
        self.db.set_rule_active(rule_id, active)
