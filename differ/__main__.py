"""
Allow running the package with: python -m differ

By default, runs the command-line search. Use the 'config' subcommand to
inspect or create the user configuration file.

Examples:
    python -m differ /path/to/photos --source cat.jpg   # Search a folder
    python -m differ /path/to/photos --cache-stats      # Cache maintenance
    python -m differ config                             # Show settings
    python -m differ config --init                      # Create example config file
"""

import sys


def _config_command() -> int:
    from .user_config import get_user_config

    config = get_user_config()

    if '--init' in sys.argv or '-i' in sys.argv:
        if config.create_example_config():
            print("Created example configuration file at:")
            print(f"  {config.config_file_path}")
            print("\nEdit this file to customize differ settings.")
            return 0
        print("Failed to create configuration file.")
        return 1

    print(f"Configuration file: {config.config_file_path}")
    if config.config_file_path.exists():
        print("Status: found")
    else:
        print("Status: not found (using defaults)")
        print("\nRun 'python -m differ config --init' to create one.")

    print("\nCurrent settings:")
    for key, value in config.as_dict().items():
        print(f"  {key}: {value}")
    return 0


def main():
    if len(sys.argv) > 1 and sys.argv[1] == 'config':
        sys.argv.pop(1)
        sys.exit(_config_command())

    if len(sys.argv) > 1 and sys.argv[1] == 'cli':
        # Accepted for symmetry with 'config'; the CLI is the default
        sys.argv.pop(1)

    from .cli import main as cli_main
    sys.exit(cli_main())


if __name__ == '__main__':
    main()
