"""Command line interface for testing configuration loading"""
import sys

from . import get_settings, SettingsError

SECRET_KEYS = {'cloudflare_api_token', 'db_url'}

def main():
    """Display loaded configuration"""
    try:
        settings = get_settings()
    except SettingsError as e:
        print(str(e))
        sys.exit(1)
        
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in sorted(settings.items()):
        shown = '********' if key in SECRET_KEYS and value else value
        print(f"{key}: {shown}")

if __name__ == "__main__":
    main()
