from .app.stdio import main

main()
