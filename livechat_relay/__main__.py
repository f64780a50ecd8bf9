from livechat_relay.api_livechat import main

main()
