# gallerica - Message Listeners
#
# One module per transport. Each provides an InflightRequest subclass that
# knows how to answer the sender, and a MessageReceiver with an async
# ``create(config)`` factory.
