from storedesk import create_app

app = create_app()
