#!/usr/bin/env python
import os
import sys


def main():
    settings_module = "storefront.settings.test" if sys.argv[1:2] == ["test"] else "storefront.settings.base"
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", settings_module)
    from django.core.management import execute_from_command_line

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
