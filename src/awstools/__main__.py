from awstools.cli import run

run()
