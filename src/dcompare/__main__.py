from dcompare.cli import main

main()
