from imagebuild.template.parse import (
    Builder,
    Provisioner,
    Template,
    TemplateError,
    decode_template,
    parse,
    parse_duration,
    parse_file,
)

__all__ = [
    "Builder",
    "Provisioner",
    "Template",
    "TemplateError",
    "decode_template",
    "parse",
    "parse_duration",
    "parse_file",
]
