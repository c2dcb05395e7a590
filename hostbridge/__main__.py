from hostbridge.cli import main

main()
