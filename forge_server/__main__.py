from forge_server.main import main

main()
