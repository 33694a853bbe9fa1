# Placeholder in the command line template that is replaced by the image path
IMAGE_PLACEHOLDER = "{image}"

# Configuration defaults
DEFAULT_RECENT_IMAGE_BUFFER_SIZE = 3
DEFAULT_NUMBER_RETRIES = 3
DEFAULT_UPDATE_IMMEDIATELY = True

# Capacity of the channel shared by all message sources
MESSAGE_CHANNEL_CAPACITY = 42

DEFAULT_SOCKET_NAME = "gallerica.sock"

DEFAULT_MQTT_HOST = "localhost"
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TOPIC = "gallerica/command"
DEFAULT_MQTT_CLIENT_ID = "gallerica"
DEFAULT_MQTT_KEEPALIVE = 60
DEFAULT_MQTT_QOS = 1

# Requests a listener holds before handing them on; a full channel makes listeners wait
LISTENER_QUEUE_SIZE = 1
