from krill.apps.cli.app import main

main()
