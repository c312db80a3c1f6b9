import torch.nn as nn


# Define neural network architecture outside the regressor for proper serialization
class PositionNetwork(nn.Module):
    """Maps a (scaled) key to a normalized position.

    With ``num_neurons > 0`` this is a single hidden ReLU layer, otherwise a
    plain linear model.
    """

    def __init__(self, num_neurons: int = 0):
        super(PositionNetwork, self).__init__()
        self.num_neurons = num_neurons
        if num_neurons > 0:
            self.net = nn.Sequential(
                nn.Linear(1, num_neurons),
                nn.ReLU(),
                nn.Linear(num_neurons, 1)
            )
        else:
            self.net = nn.Sequential(nn.Linear(1, 1))

        # Glorot normal init, zero bias
        for m in self.modules():
            if isinstance(m, nn.Linear):
                nn.init.xavier_normal_(m.weight)
                nn.init.zeros_(m.bias)

    def forward(self, x):
        return self.net(x)
