from chatroom.main import main

main()
