from volking.main import main

main()
