"""Project-specific framework utilities.

Typed accessors for the well-known StateBag keys shared by the build steps.
For reusable, project-agnostic engine primitives, use `stepkit`.
"""
