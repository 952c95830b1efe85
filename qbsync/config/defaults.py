# qbsync Default Configuration
# Full default configuration as Python dict and YAML generator

from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "instances": {
        "local": {
            "url": "http://localhost",
            "token": "",
            "timeout": 60.0,
        },
    },
    "default_instance": "local",
    "repository": {
        "root_directory": "~/questionbank",
        "use_git": False,
        "ignore_category": None,
    },
    "output": {
        "verbose": False,
        "colored": True,
    },
}


def generate_default_config() -> str:
    """Generate default configuration as YAML string with comments."""
    header = """# qbsync - Moodle question bank sync configuration
#
# instances:
#   Moodle sites by name. Each needs the site URL and a webservice token
#   for the qbank_gitsync service. Use the name with --instance.
#
# repository:
#   root_directory: where question repositories live (relative
#                   --directory values are resolved against it)
#   use_git:        check for uncommitted changes and record commit hashes
#   ignore_category: regex, categories with a matching name are not imported

"""
    return header + yaml.dump(DEFAULT_CONFIG, default_flow_style=False, sort_keys=False, allow_unicode=True)
