from poller.main import run

run()
