"""Named response checks."""

from .builtin import (
    body_contains, duration_below, json_equals, json_has, status_in, status_is,
)

builtin_checks = {
    'status_is': status_is,
    'status_in': status_in,
    'duration_below': duration_below,
    'json_has': json_has,
    'json_equals': json_equals,
    'body_contains': body_contains,
}


def list_available_checks():
    """List all available checks with descriptions."""
    from .registry import _custom_checks

    print("Available Checks:")
    print("=" * 50)

    for name, factory in sorted({**builtin_checks, **_custom_checks}.items()):
        if factory.__doc__:
            description = factory.__doc__.strip().split('\n')[0]
        else:
            description = "No description available"
        print(f"• {name:20} - {description}")

    print(f"\nTotal: {len(builtin_checks) + len(_custom_checks)} checks available")


from .registry import Check, build_check, get_check, register_check  # noqa: E402

__all__ = [
    "Check",
    "build_check",
    "builtin_checks",
    "get_check",
    "list_available_checks",
    "register_check",
]
