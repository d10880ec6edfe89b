from acpd.app import main

main()
