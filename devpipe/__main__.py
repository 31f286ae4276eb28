from devpipe.cli import main

main()
