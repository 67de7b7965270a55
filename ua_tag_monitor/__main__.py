from ua_tag_monitor.main import cli

if __name__ == "__main__":
    cli()
