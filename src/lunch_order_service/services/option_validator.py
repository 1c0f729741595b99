"""Validation of selected menu options against a menu's option groups."""

from lunch_order_service.models.menu_models import Menu
from lunch_order_service.services.order_errors import FieldError

SelectedOptions = dict[str, str | list[str]]


def normalize_selected_options(selected_options: SelectedOptions | None) -> dict[str, list[str]]:
    """Turn single values into one-element lists and drop empty groups."""
    normalized: dict[str, list[str]] = {}
    for group_id, value in (selected_options or {}).items():
        values = [value] if isinstance(value, str) else list(value)
        values = [v for v in values if v != ""]
        if values:
            normalized[group_id] = values
    return normalized


def validate_selected_options(
    menu: Menu, selected_options: dict[str, list[str]]
) -> list[FieldError]:
    """Check selections against the menu's option groups.

    Rules:
    - every selected group must exist on the menu
    - every selected value must belong to the group's value set
    - a single-select group (RADIO, SELECT) takes at most one value, and
      exactly one when required
    - a required CHECKBOX group takes at least one value

    Args:
        menu: Menu whose option groups define the allowed selections
        selected_options: Normalized selections keyed by group id

    Returns:
        list: One FieldError per offending field (empty when valid)
    """
    errors: list[FieldError] = []

    for group_id in selected_options:
        if menu.get_option_group(group_id) is None:
            errors.append(
                FieldError(field=f"selected_options.{group_id}", message="Unknown option group")
            )

    for group in menu.option_groups:
        field = f"selected_options.{group.id}"
        values = selected_options.get(group.id, [])

        if group.required and not values:
            errors.append(FieldError(field=field, message=f"{group.name} is required"))
            continue

        if not group.is_multi_select and len(values) > 1:
            errors.append(
                FieldError(field=field, message=f"{group.name} accepts a single value")
            )

        if len(set(values)) != len(values):
            errors.append(FieldError(field=field, message="Duplicate values selected"))

        for value in values:
            if value not in group.values:
                errors.append(
                    FieldError(field=field, message=f"'{value}' is not a valid choice")
                )

    return errors
