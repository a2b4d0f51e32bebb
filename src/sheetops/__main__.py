from sheetops.cli import main

main()
