from billburner.main import main

main()
