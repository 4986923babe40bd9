from fleetgate_core.notifications.pubsub import LocalPubSub, Subscriber, device_topic

__all__ = ["LocalPubSub", "Subscriber", "device_topic"]
